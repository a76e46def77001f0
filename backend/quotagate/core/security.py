from fastapi.security import OAuth2PasswordBearer

# Supabase access tokens arrive as "Authorization: Bearer <token>".
# auto_error is off so get_current_user answers missing tokens with its own 401.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="token", auto_error=False)
