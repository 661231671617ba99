from django.db import models
from django.utils import timezone


class TransitionQuerySet(models.QuerySet):
    """
    Status-guarded updates.

    ``transition`` issues a single ``UPDATE ... WHERE id = pk AND status IN
    (...)`` so the row's current status acts as the optimistic concurrency
    token: of two callers racing from the same starting status only one
    matches a row.
    """

    def transition(self, pk, from_statuses, **changes):
        if isinstance(from_statuses, str):
            from_statuses = [from_statuses]
        changes.setdefault('updated_at', timezone.now())
        return self.filter(pk=pk, status__in=list(from_statuses)).update(**changes) == 1
