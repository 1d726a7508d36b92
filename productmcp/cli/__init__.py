"""
productmcp CLI module.
"""
