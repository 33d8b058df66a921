import random
from decimal import Decimal

import factory
from django.contrib.auth import get_user_model
from faker import Faker

from marketplace.models import Address, Order, OrderItem, OrderStatus, Product

User = get_user_model()
fake = Faker()


class UserFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = User

    username = factory.Sequence(lambda n: f"user_{n}")
    email = factory.Sequence(lambda n: f"user_{n}@example.com")
    password = factory.django.Password("defaultpassword")
    is_active = True


class ProductFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Product

    title = factory.Sequence(lambda n: f"Product {n}")
    description = factory.Faker("paragraph", nb_sentences=3)
    price = factory.LazyFunction(lambda: Decimal(f"{random.randint(10, 500)}.00"))
    inventory = factory.Faker("random_int", min=1, max=100)
    version = 0

    class Params:
        untracked = factory.Trait(inventory=None)


class AddressFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Address

    user = factory.SubFactory(UserFactory)
    name = factory.Faker("name")
    street = factory.Faker("street_address")
    city = factory.Faker("city")
    state = factory.Faker("state")
    postal_code = factory.Faker("postcode")
    country = factory.Faker("country")
    is_default = False


class OrderFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Order

    user = factory.SubFactory(UserFactory)
    total = Decimal("0.00")
    status = OrderStatus.PENDING


class OrderItemFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = OrderItem

    order = factory.SubFactory(OrderFactory)
    product = factory.SubFactory(ProductFactory)
    quantity = factory.Faker("random_int", min=1, max=5)
    price = factory.LazyAttribute(lambda o: o.product.price)


def shipping_address_payload(**overrides):
    """Inline address as the checkout request carries it."""
    payload = {
        "name": fake.name(),
        "street": fake.street_address(),
        "city": fake.city(),
        "state": fake.state(),
        "postal_code": fake.postcode(),
        "country": fake.country(),
        "save_address": False,
    }
    payload.update(overrides)
    return payload
