"""pkm_portal.integrations — Gateways to systems this service does not own.

All outbound calls to external identity directories go through
``directory.DirectoryClient``; all proposal document IO goes through a
``storage.DocumentStorage``. Services never call ``requests`` or touch the
filesystem directly.

Current gateways:
  directory.DirectoryClient      — student / staff / org-unit directories
  storage.LocalDocumentStorage   — proposal documents under UPLOAD_DIR
"""
