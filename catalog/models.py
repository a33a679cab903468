# catalog/models.py
import re

from django.db import models
from django.utils.text import slugify


def is_absolute_url(url):
    return bool(url) and url.startswith(("http://", "https://"))


class Product(models.Model):
    STATUS_CHOICES = [
        ("active", "Active"),
        ("inactive", "Inactive"),
    ]

    name = models.CharField(max_length=100)
    slug = models.SlugField(max_length=200, unique=True, blank=True)
    category = models.CharField(max_length=100, db_index=True)
    price = models.DecimalField(max_digits=10, decimal_places=2)
    sale_price = models.DecimalField(max_digits=10, decimal_places=2, blank=True, null=True)
    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default="active")
    description = models.TextField(blank=True, default="")

    # Replacement policy; no days means the product cannot be replaced
    replacement_days = models.PositiveSmallIntegerField(blank=True, null=True)
    replacement_policy = models.TextField(blank=True, default="")

    date_added = models.DateTimeField(auto_now_add=True)

    def save(self, *args, **kwargs):
        if not self.slug:
            clean_name = re.sub(r'[^\w\s-]', '', self.name)
            clean_name = re.sub(r'\s+', ' ', clean_name).strip()
            base_slug = slugify(clean_name) or "product"

            slug = base_slug
            counter = 1
            while self.__class__.objects.filter(slug=slug).exists():
                slug = f"{base_slug}-{counter}"
                counter += 1

            self.slug = slug
        super().save(*args, **kwargs)

    @property
    def selling_price(self):
        return self.sale_price if self.sale_price is not None else self.price

    @property
    def has_replacement_policy(self):
        return self.replacement_days is not None

    def image_for(self, color=None):
        """Return the display image for a color, falling back to the primary image.

        Only absolute URLs are returned; an empty string means no usable image.
        """
        images = list(self.images.all())
        if color:
            for image in images:
                if image.color == color and is_absolute_url(image.url):
                    return image.url
        for image in images:
            if not image.color and is_absolute_url(image.url):
                return image.url
        return ""

    def __str__(self):
        return f"{self.name} ({self.category})"


class ProductImage(models.Model):
    product = models.ForeignKey(Product, related_name="images", on_delete=models.CASCADE)
    url = models.URLField(max_length=500)
    # Blank color marks a primary (color-agnostic) image
    color = models.CharField(max_length=50, blank=True, default="")
    position = models.PositiveSmallIntegerField(default=0)

    class Meta:
        ordering = ["position", "id"]

    def __str__(self):
        return f"{self.product.name} image #{self.position}"


class Variant(models.Model):
    product = models.ForeignKey(Product, related_name="variants", on_delete=models.CASCADE)
    color = models.CharField(max_length=50)
    size = models.CharField(max_length=20, blank=True, default="")
    stock = models.PositiveIntegerField(default=0)

    class Meta:
        ordering = ["id"]
        constraints = [
            models.UniqueConstraint(fields=["product", "color", "size"], name="unique_product_variant"),
        ]

    @property
    def sku(self):
        return f"SKU-{self.product_id:04d}-{self.color}-{self.size or 'NOSIZE'}"

    def __str__(self):
        return f"{self.product.name} / {self.color} / {self.size or '-'} ({self.stock})"
