from django.contrib import admin

from bookings.models import BookingMessage, Offer, Product, ProductOffer, Trip


@admin.register(Trip)
class TripAdmin(admin.ModelAdmin):
    list_display = ["id", "traveler", "destination", "start_date", "status"]
    list_filter = ["status"]
    search_fields = ["id", "destination"]


@admin.register(Offer)
class OfferAdmin(admin.ModelAdmin):
    list_display = ["id", "trip", "guide", "price", "status"]
    list_filter = ["status"]


@admin.register(Product)
class ProductAdmin(admin.ModelAdmin):
    list_display = ["id", "title", "guide", "price", "start_date"]
    search_fields = ["title"]


@admin.register(ProductOffer)
class ProductOfferAdmin(admin.ModelAdmin):
    list_display = ["id", "product", "traveler", "start_date", "status"]
    list_filter = ["status"]


@admin.register(BookingMessage)
class BookingMessageAdmin(admin.ModelAdmin):
    list_display = ["id", "message_type", "offer", "product_offer", "created_at"]
    list_filter = ["message_type"]
    readonly_fields = ["metadata"]
