from datetime import timedelta

from django.conf import settings
from django.db import models
from django.core.validators import RegexValidator
from django.utils import timezone
import uuid
from django.contrib.auth.models import AbstractBaseUser, BaseUserManager, PermissionsMixin


UPI_ID_REGEX = r'^[a-zA-Z0-9._-]{2,256}@[a-zA-Z]{2,64}$'


class CustomUserManager(BaseUserManager):
    def create_user(self, email, password=None, **extra_fields):
        if not email:
            raise ValueError('The Email field must be set')
        email = self.normalize_email(email).strip().lower()
        user = self.model(email=email, **extra_fields)
        user.set_password(password)
        user.save(using=self._db)
        return user

    def create_superuser(self, email, password=None, **extra_fields):
        extra_fields.setdefault('is_staff', True)
        extra_fields.setdefault('is_superuser', True)
        extra_fields.setdefault('role', CustomUser.ROLE_STORE_EMPLOYEE)
        extra_fields.setdefault('is_email_verified', True)

        if extra_fields.get('is_staff') is not True:
            raise ValueError('Superuser must have is_staff=True.')
        if extra_fields.get('is_superuser') is not True:
            raise ValueError('Superuser must have is_superuser=True.')

        return self.create_user(email, password, **extra_fields)


class TimeStampedModel(models.Model):
    """Base model with created_at and updated_at fields"""
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True


# =============== USER MANAGEMENT ===============

class CustomUser(AbstractBaseUser, PermissionsMixin, TimeStampedModel):
    """Campus user: a customer (student/faculty) or a store employee"""
    ROLE_STUDENT = 'student'
    ROLE_FACULTY = 'faculty'
    ROLE_STORE_EMPLOYEE = 'store_employee'
    ROLE_CHOICES = [
        (ROLE_STUDENT, 'Student'),
        (ROLE_FACULTY, 'Faculty'),
        (ROLE_STORE_EMPLOYEE, 'Store Employee'),
    ]

    TRUST_TIERS = [
        ('good', 'Good'),
        ('watch', 'Watch'),
        ('restricted', 'Restricted'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    email = models.EmailField(unique=True)
    name = models.CharField(max_length=255)
    role = models.CharField(max_length=20, choices=ROLE_CHOICES)

    phone_regex = RegexValidator(regex=r'^\+?\d{9,15}$')
    phone_number = models.CharField(validators=[phone_regex], max_length=17, null=True, blank=True)
    register_number = models.CharField(max_length=50, null=True, blank=True)
    employee_id = models.CharField(max_length=50, null=True, blank=True)
    is_email_verified = models.BooleanField(default=False)

    # Customer reliability
    no_show_count = models.PositiveIntegerField(default=0)
    trust_tier = models.CharField(max_length=20, choices=TRUST_TIERS, default='good')
    ordering_restricted_until = models.DateTimeField(null=True, blank=True)
    last_no_show_at = models.DateTimeField(null=True, blank=True)

    is_active = models.BooleanField(default=True)
    is_staff = models.BooleanField(default=False)

    USERNAME_FIELD = 'email'
    REQUIRED_FIELDS = ['name']
    objects = CustomUserManager()

    class Meta:
        db_table = 'users'

    def __str__(self):
        return f"{self.name} <{self.email}>"

    @property
    def is_store_employee(self):
        return self.role == self.ROLE_STORE_EMPLOYEE

    @property
    def is_ordering_restricted(self):
        return bool(self.ordering_restricted_until and self.ordering_restricted_until > timezone.now())

    def record_no_show(self, now=None):
        """Count an uncollected order against the customer and re-tier them."""
        config = settings.CAMPUSBITE
        now = now or timezone.now()
        self.refresh_from_db(fields=['no_show_count'])
        self.no_show_count += 1
        self.last_no_show_at = now

        if self.no_show_count >= config['NO_SHOW_RESTRICTION_THRESHOLD']:
            self.trust_tier = 'restricted'
            self.ordering_restricted_until = now + timedelta(days=config['NO_SHOW_RESTRICTION_DAYS'])
        elif self.no_show_count >= config['NO_SHOW_WARNING_THRESHOLD']:
            self.trust_tier = 'watch'
        else:
            self.trust_tier = 'good'

        self.save(update_fields=['no_show_count', 'last_no_show_at', 'trust_tier', 'ordering_restricted_until', 'updated_at'])


# =============== STORE ===============

class Store(TimeStampedModel):
    """Campus food outlet, owned by exactly one store employee"""
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=255)
    description = models.TextField(null=True, blank=True)
    upi_id = models.CharField(max_length=320, validators=[RegexValidator(regex=UPI_ID_REGEX)])
    owner = models.OneToOneField(CustomUser, on_delete=models.CASCADE, related_name='store')
    is_active = models.BooleanField(default=True)
    operating_hours = models.JSONField(default=dict, blank=True)
    image_url = models.CharField(max_length=500, null=True, blank=True)
    qr_code_url = models.CharField(max_length=500, null=True, blank=True)

    class Meta:
        db_table = 'stores'
        ordering = ['-created_at']

    def __str__(self):
        return self.name

    def save(self, *args, **kwargs):
        if self.upi_id:
            self.upi_id = self.upi_id.strip().lower()
        super().save(*args, **kwargs)
