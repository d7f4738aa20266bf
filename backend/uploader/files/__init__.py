"""File validation, naming and shared schemas for the upload pipeline.

Supported file groups (used by ``formats`` allow-lists):
- images: jpg, jpeg, png, gif, bmp, ico, svg, webp
- videos: flv, webm, wmv, avi, swf, mp4, mov, mpg
- audios: mp3, ogg, wav, m4a, flac
- documents: pdf, office formats, html, txt, json, xml, md, csv
- compress: zip, 7z, rar, tar, bz2, gz
"""
