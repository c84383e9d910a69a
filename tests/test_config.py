"""Settings parsing."""
import pytest
from pydantic import ValidationError

from services.shared.config import MerchantBankDetails, Settings


def test_backend_is_normalised():
    assert Settings(_env_file=None, idempotency_backend=" Redis ").idempotency_backend == "redis"


def test_unknown_backend_is_rejected():
    with pytest.raises(ValidationError):
        Settings(_env_file=None, idempotency_backend="memcached")


def test_api_url_trailing_slash_is_stripped():
    assert Settings(_env_file=None, mural_api_url="https://x.test/").mural_api_url == "https://x.test"


@pytest.mark.parametrize(
    "owner, first, last",
    [("Ana Maria Perez", "Ana", "Maria Perez"), ("Cher", "Cher", "Account"), ("", "Merchant", "Account")],
)
def test_merchant_names(owner, first, last):
    merchant = MerchantBankDetails("", "", "", "", "", "", owner, "")
    assert (merchant.first_name, merchant.last_name) == (first, last)
