"""Cache storage adapters: the shared Redis tier and the in-process fallback."""
