"""Backend utilities for the filerelay file server.

Route handlers in server.py stay thin; the work lives here:
- ZIP packing/extraction with Zip Slip protection
- path classification, copying, hashing and content sniffing
- request forwarding, response relaying and upload persistence

Security note:
Every path that reaches these helpers from HTTP is first resolved under
STORAGE_ROOT with safe_join. Never log or expose absolute filesystem paths in
responses.
"""
