"""Keys used in the cookie-backed session."""

SESSION_USER_ID = "user_id"
SESSION_USER_NAME = "user_name"
SESSION_USER_EMAIL = "user_email"
SESSION_USER_PICTURE_URL = "user_picture_url"
SESSION_FLASH = "flash"
SESSION_AUTH_NEXT = "auth_next"
SESSION_OAUTH_STATE = "oauth_state"
SESSION_OAUTH_PROVIDER = "oauth_provider"
SESSION_OAUTH_CODE_VERIFIER = "oauth_code_verifier"
SESSION_FLASH_ERROR = "flash_error"
SESSION_BOOKMARK_FORM = "bookmark_form"
