"""Live multimodal session core: streaming session manager + native audio capture bridge."""

__version__ = "0.1.0"
