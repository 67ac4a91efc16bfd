from .images import load_image
from .paths import base_name, safe_stem

__all__ = ["load_image", "base_name", "safe_stem"]
