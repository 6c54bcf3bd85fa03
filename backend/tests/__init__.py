# Test package
# tests/__init__.py
