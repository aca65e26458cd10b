import logging

from django.shortcuts import get_object_or_404
from django_filters.rest_framework import DjangoFilterBackend
from drf_spectacular.utils import OpenApiParameter, extend_schema
from rest_framework import filters, generics, permissions, status
from rest_framework.decorators import api_view, permission_classes

from authentication.exceptions import NotFound
from authentication.models import Store
from authentication.permissions import Actions, IsStoreEmployee, ensure_can
from authentication.responses import api_response
from .models import MenuItem
from .serializers import MenuItemCreateUpdateSerializer, MenuItemSerializer

logger = logging.getLogger(__name__)


class StoreContextMixin:
    """Mixin to resolve the store owned by the requesting employee"""

    def get_user_store(self):
        if not hasattr(self.request, 'user_store'):
            store = Store.objects.filter(owner=self.request.user).first()
            if store is None:
                raise NotFound("You do not own a store.")
            self.request.user_store = store
        return self.request.user_store

    def get_serializer_context(self):
        context = super().get_serializer_context()
        context['store'] = self.get_user_store()
        return context


# =============== STORE MENU (public) ===============

class StoreMenuView(generics.ListAPIView):
    """
    Menu of one store, grouped by category then name
    """
    serializer_class = MenuItemSerializer
    permission_classes = [permissions.AllowAny]
    pagination_class = None
    filter_backends = [DjangoFilterBackend, filters.SearchFilter]
    filterset_fields = ['category']
    search_fields = ['name']

    def get_queryset(self):
        store = get_object_or_404(Store, pk=self.kwargs['store_id'])
        return MenuItem.objects.filter(store=store).order_by('category', 'name')

    @extend_schema(
        summary="Get Store Menu",
        parameters=[
            OpenApiParameter('category', str, description='Exact category'),
            OpenApiParameter('search', str, description='Case-insensitive match on item name'),
        ],
        responses={200: MenuItemSerializer(many=True)},
    )
    def get(self, request, *args, **kwargs):
        queryset = self.filter_queryset(self.get_queryset())
        return api_response({'menuItems': self.get_serializer(queryset, many=True).data})


# =============== MENU MANAGEMENT ===============

class MenuItemCreateView(StoreContextMixin, generics.CreateAPIView):
    serializer_class = MenuItemCreateUpdateSerializer
    permission_classes = [permissions.IsAuthenticated, IsStoreEmployee]

    @extend_schema(
        summary="Add Menu Item",
        request=MenuItemCreateUpdateSerializer,
        responses={201: MenuItemSerializer},
    )
    def post(self, request, *args, **kwargs):
        store = self.get_user_store()
        ensure_can(request.user, Actions.MANAGE_MENU, store)

        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        item = serializer.save(store=store)
        logger.info(f"Menu item {item.id} added to store {store.id}")

        return api_response(
            {'menuItem': MenuItemSerializer(item).data},
            message='Menu item added successfully.',
            status=status.HTTP_201_CREATED,
        )


class MenuItemDetailView(generics.GenericAPIView):
    """
    get: Menu item details (public)
    put/patch: Update a menu item (store owner only)
    delete: Delete a menu item (store owner only)
    """
    queryset = MenuItem.objects.select_related('store')
    serializer_class = MenuItemCreateUpdateSerializer

    def get_permissions(self):
        if self.request.method == 'GET':
            return [permissions.AllowAny()]
        return [permissions.IsAuthenticated(), IsStoreEmployee()]

    def get_object(self):
        return get_object_or_404(self.get_queryset(), pk=self.kwargs['pk'])

    @extend_schema(summary="Get Menu Item", responses={200: MenuItemSerializer})
    def get(self, request, pk):
        return api_response({'menuItem': MenuItemSerializer(self.get_object()).data})

    @extend_schema(summary="Update Menu Item", request=MenuItemCreateUpdateSerializer, responses={200: MenuItemSerializer})
    def put(self, request, pk):
        return self._update(request, partial=False)

    @extend_schema(summary="Partially Update Menu Item", request=MenuItemCreateUpdateSerializer, responses={200: MenuItemSerializer})
    def patch(self, request, pk):
        return self._update(request, partial=True)

    @extend_schema(summary="Delete Menu Item", responses={200: {'description': 'Deleted'}})
    def delete(self, request, pk):
        item = self.get_object()
        ensure_can(request.user, Actions.MANAGE_MENU, item, 'You are not authorized to delete this menu item.')
        item.delete()
        logger.info(f"Menu item {pk} deleted by {request.user.email}")
        return api_response(message='Menu item deleted successfully.')

    def _update(self, request, partial):
        item = self.get_object()
        ensure_can(request.user, Actions.MANAGE_MENU, item, 'You are not authorized to update this menu item.')

        serializer = self.get_serializer(item, data=request.data, partial=partial)
        serializer.is_valid(raise_exception=True)
        item = serializer.save()

        return api_response({'menuItem': MenuItemSerializer(item).data}, message='Menu item updated successfully.')


@extend_schema(
    summary="Toggle Menu Item Availability",
    request=None,
    responses={200: MenuItemSerializer},
)
@api_view(['PATCH'])
@permission_classes([permissions.IsAuthenticated, IsStoreEmployee])
def toggle_availability(request, pk):
    item = get_object_or_404(MenuItem.objects.select_related('store'), pk=pk)
    ensure_can(request.user, Actions.MANAGE_MENU, item, 'You are not authorized to update this menu item.')

    item.is_available = not item.is_available
    item.save(update_fields=['is_available', 'updated_at'])

    state = 'available' if item.is_available else 'unavailable'
    return api_response(
        {'menuItem': MenuItemSerializer(item).data},
        message=f'Menu item is now {state}.',
    )
