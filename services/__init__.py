"""Order lifecycle, document access and external collaborators."""
