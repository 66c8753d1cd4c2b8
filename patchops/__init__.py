"""
patchops - patch deployment orchestration for Azure Arc managed machines.
"""

__version__ = "1.0.0"
