import django_filters

from .models import Order, OrderStatus


class OrderFilter(django_filters.FilterSet):
    status = django_filters.ChoiceFilter(choices=OrderStatus.choices)
    role = django_filters.ChoiceFilter(
        choices=(('buyer', 'Buyer'), ('seller', 'Seller')),
        method='filter_role',
        label='Side of the order the current user is on',
    )

    class Meta:
        model = Order
        fields = ['status', 'role']

    def filter_role(self, queryset, name, value):
        user = self.request.user
        if value == 'buyer':
            return queryset.for_buyer(user.id)
        return queryset.for_seller(user.id)
