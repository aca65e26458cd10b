from django.urls import path

from . import views

urlpatterns = [
    # =============== STORE MENU ===============
    path('stores/<uuid:store_id>/menu/', views.StoreMenuView.as_view(), name='store_menu'),

    # =============== MENU MANAGEMENT ===============
    path('menu/', views.MenuItemCreateView.as_view(), name='menu_item_create'),
    path('menu/<uuid:pk>/', views.MenuItemDetailView.as_view(), name='menu_item_detail'),
    path('menu/<uuid:pk>/availability/', views.toggle_availability, name='menu_item_availability'),
]
