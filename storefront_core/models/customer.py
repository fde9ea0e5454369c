"""Customer contact details carried on an order."""

from pydantic import BaseModel, EmailStr, Field


class CustomerContact(BaseModel):
    """Who to notify about an order."""

    customer_id: str | None = None
    name: str = Field(min_length=1, max_length=120)
    email: EmailStr | None = None
    phone: str | None = Field(default=None, pattern=r"^\+?[0-9 \-]{7,20}$")

    @property
    def has_channel(self) -> bool:
        """Check if at least one notification channel is present."""
        return bool(self.email or self.phone)
