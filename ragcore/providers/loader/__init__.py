from ragcore.providers.loader.text_file_loader import TextFileLoader

__all__ = ["TextFileLoader"]
