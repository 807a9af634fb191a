# MIT License
# Copyright (c) 2025 Hashborn

from .api import create_app

__all__ = ["create_app"]
