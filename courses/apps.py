"""
Courses Application Configuration

Django application configuration for the course catalog and the
date-driven offer endpoints. The app has no models; everything it serves
is static configuration combined with the current date.

Author: Beacons of Change Development Team
Version: 1.0.0
"""

from django.apps import AppConfig


class CoursesConfig(AppConfig):
    """
    Configuration class for the Courses Django application.

    Attributes:
        default_auto_field: Default primary key field type for models
        name: Application name for Django registration
        verbose_name: Human-readable application name for admin interface
    """

    default_auto_field: str = "django.db.models.BigAutoField"
    name: str = "courses"
    verbose_name: str = "Course Catalog"
