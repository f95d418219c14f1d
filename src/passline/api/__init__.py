from passline.api.client import ApiResult, AuthApiClient

__all__ = ["ApiResult", "AuthApiClient"]
