"""Google OAuth scopes requested for form integrations."""

USERINFO_EMAIL_SCOPE = "https://www.googleapis.com/auth/userinfo.email"
USERINFO_PROFILE_SCOPE = "https://www.googleapis.com/auth/userinfo.profile"

SHEETS_WRITE_SCOPE = "https://www.googleapis.com/auth/spreadsheets"

BASE_SCOPES = [
    USERINFO_EMAIL_SCOPE,
    USERINFO_PROFILE_SCOPE,
]

SHEETS_SCOPES = [
    SHEETS_WRITE_SCOPE,
]

# Identity plus the one delegated API forms write to
SCOPES = SHEETS_SCOPES + BASE_SCOPES
