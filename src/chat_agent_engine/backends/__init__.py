from .comfyui import ComfyUIBackend, ComfyUIConfig

__all__ = ["ComfyUIBackend", "ComfyUIConfig"]
