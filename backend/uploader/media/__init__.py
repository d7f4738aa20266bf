"""Image geometry, codec and transform service.

- geometry: pure resize/crop math and dimension-token parsing
- codec: Pillow decode/encode, SVG rasterisation through cairosvg
- transform: resize-and-crop, crop-or-resize and thumbnail generation
"""
