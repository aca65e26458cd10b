from rest_framework import serializers

from .models import MenuItem


class MenuItemSerializer(serializers.ModelSerializer):
    store_id = serializers.UUIDField(source='store.id', read_only=True)

    class Meta:
        model = MenuItem
        fields = [
            'id', 'store_id', 'name', 'description', 'price', 'image_url',
            'category', 'is_available', 'created_at', 'updated_at',
        ]
        read_only_fields = ['id', 'store_id', 'created_at', 'updated_at']


class MenuItemCreateUpdateSerializer(serializers.ModelSerializer):
    price = serializers.DecimalField(max_digits=10, decimal_places=2, min_value=0)

    class Meta:
        model = MenuItem
        fields = ['name', 'description', 'price', 'image_url', 'category', 'is_available']

    def validate_name(self, value):
        value = value.strip()
        if not value:
            raise serializers.ValidationError("Name cannot be blank.")
        return value

    def validate_category(self, value):
        return value.strip() if value else None
