"""auth/ -- Identity resolution for the BLT API.

Layer rule: auth/ imports from core/ and tracker/schema.py only.
It does NOT import from api/. api/ imports from auth/, not the other way around.
"""
