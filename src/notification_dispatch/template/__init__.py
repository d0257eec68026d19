from .engine import TemplateEngine
from .renderers import ITemplateRenderer, JinjaTemplateRenderer, PlaceholderRenderer

__all__ = [
    "ITemplateRenderer",
    "JinjaTemplateRenderer",
    "PlaceholderRenderer",
    "TemplateEngine",
]
