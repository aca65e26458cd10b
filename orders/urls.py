from django.urls import path

from . import views

urlpatterns = [
    path('', views.OrderListCreateView.as_view(), name='order-list'),
    path('<uuid:pk>/', views.OrderDetailView.as_view(), name='order-detail'),
    path('<uuid:pk>/payment-status/', views.update_payment_status, name='order-payment-status'),
    path('<uuid:pk>/status/', views.update_order_status, name='order-status'),
    path('<uuid:pk>/verify-otp/', views.verify_otp, name='order-verify-otp'),
    path('<uuid:pk>/reissue-otp/', views.reissue_otp, name='order-reissue-otp'),
    path('<uuid:pk>/poll-status/', views.poll_status, name='order-poll-status'),
]
