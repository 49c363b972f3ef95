from __future__ import annotations

from .articles import CallDiet, FetchResult, ProcessedArticle, RawArticle

__all__ = ["CallDiet", "FetchResult", "ProcessedArticle", "RawArticle"]
