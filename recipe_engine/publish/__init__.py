"""Publishing to external CMSs: credential crypto, HTML sanitizing, Drupal client."""

from recipe_engine.publish.crypto import decrypt_credentials, encrypt_credentials
from recipe_engine.publish.drupal import DrupalClient, DrupalConfig, validate_base_url
from recipe_engine.publish.sanitize import sanitize_html

__all__ = [
    "DrupalClient",
    "DrupalConfig",
    "decrypt_credentials",
    "encrypt_credentials",
    "sanitize_html",
    "validate_base_url",
]
