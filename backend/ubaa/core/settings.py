from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    PROJECT_NAME: str = "UBAA"
    # Audit trail only; sessions themselves never touch the database
    DATABASE_URL: str = "sqlite://"
    LOG_LEVEL: str = "INFO"
    SERVER_HOST: str = "127.0.0.1"
    SERVER_PORT: int = 8000

    # Bearer token config
    JWT_SECRET: str = "ubaa-dev-secret-unsafe"
    JWT_ALGORITHM: str = "HS256"
    JWT_ISSUER: str = "ubaa-server"
    JWT_AUDIENCE: str = "ubaa-users"

    # Session store
    SESSION_TTL_MINUTES: int = 30
    SESSION_SWEEP_INTERVAL_SECONDS: int = 60
    SESSION_REVERIFY_ON_LOGIN: bool = True
    SESSION_LOCK_STRIPES: int = 64
    # How long a login parked on a captcha challenge waits for its answer
    SESSION_PRELOGIN_TTL_MINUTES: int = 5

    # WebVPN gateway
    USE_VPN: bool = False
    VPN_HOST: str = "d.buaa.edu.cn"
    VPN_KEY: str = "wrdvpnisthebest!"

    # Upstream identity provider and user center
    SSO_LOGIN_URL: str = "https://sso.buaa.edu.cn/login"
    SSO_LOGOUT_URL: str = "https://sso.buaa.edu.cn/logout"
    SSO_CAPTCHA_URL: str = "https://sso.buaa.edu.cn/captcha"
    UC_LOGIN_URL: str = "https://uc.buaa.edu.cn/api/login?target=https%3A%2F%2Fuc.buaa.edu.cn%2F%23%2Fuser%2Flogin"
    UC_STATUS_URL: str = "https://uc.buaa.edu.cn/api/uc/status"
    UC_USERINFO_URL: str = "https://uc.buaa.edu.cn/api/uc/userinfo"

    # Outbound HTTP
    HTTP_CONNECT_TIMEOUT: float = 10.0
    HTTP_READ_TIMEOUT: float = 30.0
    HTTP_MAX_REDIRECTS: int = 10

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

settings = Settings()
