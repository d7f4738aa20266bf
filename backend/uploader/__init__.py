"""Media uploader: validated uploads with image versions and thumbnails."""
