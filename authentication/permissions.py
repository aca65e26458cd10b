from rest_framework import permissions

from .exceptions import Forbidden
from .models import Store


# Permission constants
class Actions:
    VIEW_ORDER = 'order.view'
    UPDATE_PAYMENT = 'order.update_payment'
    UPDATE_ORDER_STATUS = 'order.update_status'
    VERIFY_OTP = 'order.verify_otp'
    UPDATE_STORE = 'store.update'
    MANAGE_MENU = 'menu.manage'

    STORE_OPERATIONS = (
        UPDATE_PAYMENT,
        UPDATE_ORDER_STATUS,
        VERIFY_OTP,
        UPDATE_STORE,
        MANAGE_MENU,
    )


def _store_id_of(resource):
    if isinstance(resource, Store):
        return resource.pk
    return getattr(resource, 'store_id', None)


def _owns_store(actor, resource):
    if not getattr(actor, 'is_store_employee', False):
        return False
    store_id = _store_id_of(resource)
    if store_id is None:
        return False
    return Store.objects.filter(pk=store_id, owner_id=actor.pk).exists()


def can(actor, action, resource):
    """
    Single authorization check for store and order operations.

    Customers may view their own orders. The owner of a store may view and
    operate that store's orders, update the store and manage its menu.
    """
    if actor is None or not actor.is_authenticated:
        return False

    if action == Actions.VIEW_ORDER:
        if getattr(resource, 'user_id', None) == actor.pk:
            return True
        return _owns_store(actor, resource)

    if action in Actions.STORE_OPERATIONS:
        return _owns_store(actor, resource)

    return False


def ensure_can(actor, action, resource, message=None):
    if not can(actor, action, resource):
        raise Forbidden(message) if message else Forbidden()


class IsStoreEmployee(permissions.BasePermission):
    """
    Allows access only to authenticated users with the store_employee role
    """
    message = 'Only store employees can perform this action.'

    def has_permission(self, request, view):
        return bool(
            request.user
            and request.user.is_authenticated
            and request.user.is_store_employee
        )
