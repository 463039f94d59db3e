from .gallery import GalleryWriter, StorageSink, encode_jpeg, suggested_filename

__all__ = ["GalleryWriter", "StorageSink", "encode_jpeg", "suggested_filename"]
