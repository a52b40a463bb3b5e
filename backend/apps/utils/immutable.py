from django.db import models


class AppendOnlyQuerySet(models.QuerySet):
    def update(self, **kwargs):
        raise RuntimeError(f"{self.model.__name__} rows are immutable (bulk update blocked)")

    def delete(self):
        raise RuntimeError(f"{self.model.__name__} rows are immutable (bulk delete blocked)")


class AppendOnlyManager(models.Manager):
    def get_queryset(self):
        return AppendOnlyQuerySet(self.model, using=self._db)


class AppendOnlyModel(models.Model):
    """
    Rows can be inserted, never changed or removed. Guards the single-row
    save/delete paths and the bulk QuerySet ones.
    """
    objects = AppendOnlyManager()

    class Meta:
        abstract = True

    def save(self, *args, **kwargs):
        if self.pk:
            raise RuntimeError(f"{self.__class__.__name__} rows are immutable (update blocked)")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise RuntimeError(f"{self.__class__.__name__} rows are immutable (delete blocked)")
