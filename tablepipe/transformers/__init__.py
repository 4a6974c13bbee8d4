from tablepipe.transformers.base import RowTransformer

__all__ = ["RowTransformer"]
