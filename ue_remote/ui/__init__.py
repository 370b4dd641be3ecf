from .cli import RemoteCLI

__all__ = ["RemoteCLI"]
