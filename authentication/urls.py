from django.urls import path
from drf_spectacular.views import SpectacularAPIView, SpectacularSwaggerView

from . import views

urlpatterns = [
    # =============== API DOCUMENTATION ===============
    path('schema/', SpectacularAPIView.as_view(), name='schema'),
    path('docs/', SpectacularSwaggerView.as_view(url_name='schema'), name='swagger-ui'),

    # =============== AUTHENTICATION ===============
    path('auth/register/', views.register, name='register'),
    path('auth/login/', views.LoginView.as_view(), name='token_obtain_pair'),
    path('auth/refresh/', views.RefreshView.as_view(), name='token_refresh'),
    path('auth/logout/', views.logout, name='logout'),
    path('auth/verify-email/<str:uidb64>/<str:token>/', views.verify_email, name='verify_email'),
    path('auth/resend-verification/', views.resend_verification, name='resend_verification'),
    path('auth/forgot-password/', views.forgot_password, name='forgot_password'),
    path('auth/reset-password/<str:uidb64>/<str:token>/', views.reset_password, name='reset_password'),

    # =============== USER PROFILE ===============
    path('users/profile/', views.MyProfileView.as_view(), name='my_profile'),

    # =============== STORES ===============
    path('stores/', views.StoreListView.as_view(), name='store_list'),
    path('stores/<uuid:pk>/', views.StoreDetailView.as_view(), name='store_detail'),

    # =============== SYSTEM ===============
    path('health/', views.health_check, name='health_check'),
]
