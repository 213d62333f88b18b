"""auth/ -- Credential authentication and token lifecycle for Focipedia.

Layer rule: auth/ imports from core/ (config) and third-party libraries.
core/ never imports from auth/. The HTTP layer imports AuthService from
auth.service and maps AuthError.to_dict() into its error bodies.
"""
