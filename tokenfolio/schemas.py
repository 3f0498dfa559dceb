from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

URL_FIELDS = ("logo_url", "banner_url", "twitter_url", "telegram_url", "website_url")


def _check_url(value: Optional[str]) -> Optional[str]:
    if value is None or value == "":
        return None
    if not value.startswith(("http://", "https://")):
        raise ValueError("must be an http(s) URL")
    return value


class PortfolioData(BaseModel):
    username: Optional[str] = None
    token_name: str = Field(min_length=1, max_length=50)
    ticker: Optional[str] = Field(default=None, max_length=10)
    contract_address: Optional[str] = None
    slogan: Optional[str] = Field(default=None, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    template: str = "modern"
    logo_url: Optional[str] = None
    banner_url: Optional[str] = None
    twitter_url: Optional[str] = None
    telegram_url: Optional[str] = None
    website_url: Optional[str] = None

    @field_validator("token_name")
    @classmethod
    def token_name_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("token_name must not be blank")
        return v

    @field_validator("username")
    @classmethod
    def strip_username(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return v.strip() or None

    @field_validator(*URL_FIELDS)
    @classmethod
    def validate_urls(cls, v: Optional[str]) -> Optional[str]:
        return _check_url(v)

    def content(self) -> dict:
        return self.model_dump(exclude={"username"})


class PaymentRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    portfolio_data: PortfolioData = Field(
        validation_alias=AliasChoices("portfolioData", "draftContent", "portfolio_data"),
    )
    amount: float = Field(gt=0)
    currency: Optional[str] = Field(default=None, min_length=1, max_length=10)


class PortfolioUpdate(BaseModel):
    """Admin edit. Only unpublishing is allowed through is_published."""

    model_config = ConfigDict(extra="forbid")

    token_name: Optional[str] = Field(default=None, min_length=1, max_length=50)
    ticker: Optional[str] = Field(default=None, max_length=10)
    contract_address: Optional[str] = None
    slogan: Optional[str] = Field(default=None, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    template: Optional[str] = None
    logo_url: Optional[str] = None
    banner_url: Optional[str] = None
    twitter_url: Optional[str] = None
    telegram_url: Optional[str] = None
    website_url: Optional[str] = None
    is_published: Optional[bool] = None

    @field_validator(*URL_FIELDS)
    @classmethod
    def validate_urls(cls, v: Optional[str]) -> Optional[str]:
        return _check_url(v)
