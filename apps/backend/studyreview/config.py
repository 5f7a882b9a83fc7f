import re
from typing import Annotated

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic_settings.sources.types import NoDecode


# Firestore の `in` / `array-contains-any` が一度に受け付ける値の上限。
FIRESTORE_IN_QUERY_HARD_LIMIT = 30
_REMINDER_TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    環境変数から読み込まれるアプリ設定クラス。
    - environment: 実行環境（development/staging/production など）
    - firestore_*: Firestore 接続先
    - srs_*: 復習スケジューリングの定数
    """

    environment: str = Field(
        default="development",
        description="Runtime environment / 実行環境",
    )
    gcp_project_id: str | None = Field(
        default=None,
        description="GCP project ID / GCP プロジェクトID",
        validation_alias=AliasChoices("gcp_project_id", "google_cloud_project"),
    )
    firestore_project_id: str | None = Field(
        default=None,
        description="Firestore project ID (falls back to gcp_project_id)",
    )
    firestore_emulator_host: str | None = Field(
        default=None,
        description="Firestore emulator host (host:port) / Firestore エミュレータのホスト",
    )
    firestore_in_query_max: int = Field(
        default=FIRESTORE_IN_QUERY_HARD_LIMIT,
        ge=1,
        le=FIRESTORE_IN_QUERY_HARD_LIMIT,
        description=(
            "Max values per Firestore `in` lookup when hydrating due items / "
            "期限到来アイテムの本体取得で 1 回の in クエリに渡す ID 数"
        ),
    )

    # --- 認証（外部コラボレータ） ---
    user_id_header: str = Field(
        default="X-User-Id",
        description="Header carrying the authenticated user id / 認証済みユーザーIDを運ぶヘッダ",
    )

    # --- SRS ---
    srs_max_interval_days: int = Field(
        default=365,
        ge=1,
        description="Upper bound for review intervals (days) / 復習間隔の上限（日）",
    )
    srs_leech_threshold: int = Field(
        default=8,
        ge=1,
        description="Consecutive failures before an item is flagged as leech / リーチ判定の連続失敗回数",
    )

    # --- ページング ---
    default_due_limit: int = Field(
        default=20,
        ge=1,
        description="Default page size for due queues / 期限到来キューの既定件数",
    )
    max_page_limit: int = Field(
        default=100,
        ge=1,
        description="Max page size accepted by list endpoints / 一覧系エンドポイントの最大件数",
    )

    # --- プログラム復習 ---
    default_reminder_time: str = Field(
        default="09:00",
        description="Default reminder time (HH:MM) / リマインダーの既定時刻",
    )
    upcoming_review_days: int = Field(
        default=7,
        ge=1,
        description="Default look-ahead window for upcoming reviews (days)",
    )

    allowed_cors_origins: Annotated[tuple[str, ...], NoDecode] = Field(
        default=(),
        description="Comma separated CORS origins / CORS で許可するオリジン",
    )
    trusted_proxy_ips: Annotated[tuple[str, ...], NoDecode] = Field(
        default=("127.0.0.1",),
        description=(
            "Trusted proxy IPs/CIDR ranges for ProxyHeadersMiddleware / "
            "ProxyHeadersMiddleware に渡す信頼済みプロキシの IP または CIDR"
        ),
        validation_alias=AliasChoices("trusted_proxy_ips", "forwarded_allow_ips"),
    )
    sentry_dsn: str | None = Field(
        default=None, description="Sentry DSN (enable if set)"
    )

    # Pydantic v2 settings config
    # - env_file: .env を読み込む
    # - extra: .env に存在する未使用キーを無視
    # - case_sensitive: 環境変数キーの大小文字を区別しない
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        case_sensitive=False,
    )

    @field_validator("user_id_header", mode="after")
    @classmethod
    def _validate_user_id_header(cls, value: str) -> str:
        """Reject blank header names.

        なぜ: 空のヘッダ名が設定されると全リクエストが未認証扱いになり、
        障害の原因特定が難しくなるため起動時に検出する。
        """

        header = (value or "").strip()
        if not header:
            raise ValueError("USER_ID_HEADER must not be empty")
        return header

    @field_validator("default_reminder_time", mode="after")
    @classmethod
    def _validate_reminder_time(cls, value: str) -> str:
        text = (value or "").strip()
        if not _REMINDER_TIME_PATTERN.match(text):
            raise ValueError("DEFAULT_REMINDER_TIME must be formatted as HH:MM")
        return text

    @field_validator("allowed_cors_origins", "trusted_proxy_ips", mode="before")
    @classmethod
    def _normalise_csv_tuple(
        cls, raw_origins: object
    ) -> tuple[str, ...] | object:  # pragma: no cover - pydantic handles typing
        """Convert comma separated environment input into a deduplicated tuple.

        なぜ: CORS オリジンや信頼済みプロキシを `.env` で管理するときに空白や重複が
        混ざりやすいため、ミドルウェアへ渡す前にトリムと重複排除を行って安全な配列へ正規化する。
        """

        if raw_origins is None:
            candidates: list[str] = []
        elif isinstance(raw_origins, str):
            candidates = raw_origins.split(",")
        else:
            try:
                candidates = list(raw_origins)
            except TypeError:
                return raw_origins

        normalised: list[str] = []
        seen: set[str] = set()
        for candidate in candidates:
            if not isinstance(candidate, str):
                continue
            trimmed = candidate.strip()
            if not trimmed or trimmed in seen:
                continue
            seen.add(trimmed)
            normalised.append(trimmed)

        return tuple(normalised)


def is_valid_reminder_time(value: str | None) -> bool:
    """Return True when the value is a HH:MM time of day."""

    return bool(value) and bool(_REMINDER_TIME_PATTERN.match(str(value)))


settings = Settings()
