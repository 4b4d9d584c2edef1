"""
Administrator-tunable engine settings.

Every known setting is its own pydantic model, tagged by its `key`. The
models form a closed discriminated union, so a value is type-checked when
the setting is built rather than when it is read back. There is no open
key/value map: unknown keys are rejected.
"""

from typing import Annotated, Any, Dict, List, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator
from pydantic import ValidationError as PydanticValidationError

from chitfund.core.errors import ValidationError
from chitfund.core.ledger.entry import PaymentMethod
from chitfund.utils.logger import get_logger

logger = get_logger("settings")


# =============================================================================
# Setting variants
# =============================================================================


class _Setting(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid", strict=True)


class DefaultGracePeriodDays(_Setting):
    key: Literal["DEFAULT_GRACE_PERIOD_DAYS"] = "DEFAULT_GRACE_PERIOD_DAYS"
    value: int = Field(default=3, ge=0, le=365)


class MinBidIncrement(_Setting):
    key: Literal["MIN_BID_INCREMENT"] = "MIN_BID_INCREMENT"
    value: int = Field(default=1, ge=1)


class PaymentMethods(_Setting):
    """Payment channels the service accepts (subset of PaymentMethod)."""
    key: Literal["PAYMENT_METHODS"] = "PAYMENT_METHODS"
    value: List[PaymentMethod] = Field(default_factory=lambda: list(PaymentMethod), min_length=1)

    @field_validator("value", mode="before")
    @classmethod
    def _parse_methods(cls, value: Any) -> Any:
        if isinstance(value, (list, tuple)):
            return [PaymentMethod.parse(v) for v in value]
        return value


class EnableNotifications(_Setting):
    key: Literal["ENABLE_NOTIFICATIONS"] = "ENABLE_NOTIFICATIONS"
    value: bool = True


class CurrencyCode(_Setting):
    key: Literal["CURRENCY_CODE"] = "CURRENCY_CODE"
    value: str = Field(default="INR", pattern=r"^[A-Z]{3}$")


class CurrencySymbol(_Setting):
    key: Literal["CURRENCY_SYMBOL"] = "CURRENCY_SYMBOL"
    value: str = Field(default="₹", min_length=1, max_length=5)


Setting = Annotated[
    Union[
        DefaultGracePeriodDays,
        MinBidIncrement,
        PaymentMethods,
        EnableNotifications,
        CurrencyCode,
        CurrencySymbol,
    ],
    Field(discriminator="key"),
]

_SETTING_ADAPTER = TypeAdapter(Setting)

SETTING_KEYS = (
    "DEFAULT_GRACE_PERIOD_DAYS",
    "MIN_BID_INCREMENT",
    "PAYMENT_METHODS",
    "ENABLE_NOTIFICATIONS",
    "CURRENCY_CODE",
    "CURRENCY_SYMBOL",
)


def parse_setting(key: str, value: Any) -> Setting:
    """
    Build a typed setting from a raw key/value pair.

    Raises:
        ValidationError: unknown key or value of the wrong type/range
    """
    if key not in SETTING_KEYS:
        raise ValidationError(f"Unknown setting: {key!r}")
    try:
        return _SETTING_ADAPTER.validate_python({"key": key, "value": value})
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid value for {key}: {e.errors()[0]['msg']}") from None


# =============================================================================
# Current values
# =============================================================================


class EngineSettings:
    """
    Current setting values, one typed variant per key.

    Unset keys fall back to each variant's default.
    """

    def __init__(self):
        self._values: Dict[str, Setting] = {}
        self.reset()

    def reset(self) -> None:
        self._values = {
            s.key: s
            for s in (
                DefaultGracePeriodDays(),
                MinBidIncrement(),
                PaymentMethods(),
                EnableNotifications(),
                CurrencyCode(),
                CurrencySymbol(),
            )
        }

    def apply(self, setting: Setting) -> None:
        previous = self._values.get(setting.key)
        self._values[setting.key] = setting
        logger.info(
            f"Setting {setting.key} changed: "
            f"{previous.value if previous else None!r} -> {setting.value!r}"
        )

    def update(self, key: str, value: Any) -> Setting:
        """Parse and apply in one step."""
        setting = parse_setting(key, value)
        self.apply(setting)
        return setting

    def get(self, key: str) -> Setting:
        try:
            return self._values[key]
        except KeyError:
            raise ValidationError(f"Unknown setting: {key!r}") from None

    def as_dict(self) -> Dict[str, Any]:
        out = {}
        for key, setting in self._values.items():
            value = setting.value
            if key == "PAYMENT_METHODS":
                value = [m.value for m in value]
            out[key] = value
        return out

    # Typed accessors

    @property
    def default_grace_period_days(self) -> int:
        return self._values["DEFAULT_GRACE_PERIOD_DAYS"].value

    @property
    def min_bid_increment(self) -> int:
        return self._values["MIN_BID_INCREMENT"].value

    @property
    def payment_methods(self) -> List[PaymentMethod]:
        return list(self._values["PAYMENT_METHODS"].value)

    @property
    def notifications_enabled(self) -> bool:
        return self._values["ENABLE_NOTIFICATIONS"].value

    @property
    def currency_code(self) -> str:
        return self._values["CURRENCY_CODE"].value

    @property
    def currency_symbol(self) -> str:
        return self._values["CURRENCY_SYMBOL"].value

    def format_amount(self, amount: int) -> str:
        """Render an amount with the configured currency symbol."""
        sign = "-" if amount < 0 else ""
        return f"{sign}{self.currency_symbol}{abs(amount):,}"
