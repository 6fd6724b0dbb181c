from django.db import models
from django.urls import reverse


class Page(models.Model):
    """HTML page authored in the host platform"""

    course_id = models.BigIntegerField(null=True, blank=True, db_index=True)
    title = models.CharField(max_length=255)
    intro = models.TextField(blank=True)
    content = models.TextField(blank=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['id']

    def __str__(self):
        return self.title

    def get_absolute_url(self):
        return reverse('page_detail', args=[self.pk])

    @property
    def cache_scope(self):
        """Scope used to cache rendered pages; one per course when set"""
        if self.course_id:
            return f'course:{self.course_id}'
        return f'page:{self.pk}'
