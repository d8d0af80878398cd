"""DI 컨테이너 테스트"""
import pytest

from payfast_itn.core.container import DIContainer
from payfast_itn.core.interfaces import IPaymentValidator


def test_registered_singleton_is_returned():
    container = DIContainer()
    validator = object()
    container.register_singleton(IPaymentValidator, validator)
    assert container.get(IPaymentValidator) is validator


def test_unregistered_service_raises():
    with pytest.raises(ValueError, match="IPaymentValidator"):
        DIContainer().get(IPaymentValidator)
