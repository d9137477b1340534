import logging

from .errors import NotFound
from .models import Scope, Student

logger = logging.getLogger(__name__)


def student_field_value(student, field_key):
    if field_key == 'hostel_id':
        return student.hostel_id
    if field_key == 'class_section_id':
        return student.class_section_id
    if field_key == 'batch_id':
        return student.batch_id
    return None


def scope_from_location(category, location):
    """A location naming one of the domain's scopes, e.g. a hostel picked on the form."""
    if not location or not category.domain_id:
        return None
    return (
        Scope.objects.filter(domain_id=category.domain_id, is_active=True, name__iexact=location.strip()).first()
    )


def resolve_ticket_scope(category, user, location=None):
    """Work out which scope a new ticket in ``category`` belongs to.

    * ``none``: no scope.
    * ``fixed``: the category's own scope.
    * ``dynamic``: the category scope names a student attribute
      (hostel, class section or batch); the scope of the same domain whose
      ``reference_id`` equals the student's value is used. A location that
      names a scope of the domain takes precedence.
    """
    mode = category.scope_mode

    if mode == 'none':
        return None

    if mode == 'fixed':
        if not category.scope_id:
            logger.warning("Category %s has fixed scope mode but no scope", category.pk)
            return None
        return category.scope

    if mode == 'dynamic':
        from_location = scope_from_location(category, location)
        if from_location:
            return from_location

        if not category.scope_id:
            logger.debug("Category %s is dynamic without a scope template, skipping", category.pk)
            return None

        field_key = category.scope.student_field_key
        if not field_key:
            logger.warning("Scope %s has no student_field_key", category.scope_id)
            return None

        try:
            student = Student.objects.get(user=user)
        except Student.DoesNotExist:
            raise NotFound('Student profile', user.pk)

        value = student_field_value(student, field_key)
        if not value:
            logger.warning("Could not resolve %s for user %s in category %s", field_key, user.pk, category.pk)
            return None

        scope = Scope.objects.filter(
            domain_id=category.domain_id or category.scope.domain_id,
            student_field_key=field_key,
            reference_id=value,
            is_active=True,
        ).first()
        if scope is None:
            logger.warning("No scope configured for %s=%s", field_key, value)
        return scope

    logger.warning("Unknown scope mode %r on category %s", mode, category.pk)
    return None


def check_scope_access(user, scope):
    """Students may only raise tickets against their own hostel/section/batch."""
    if scope is None or not scope.student_field_key:
        return True
    try:
        student = Student.objects.get(user=user)
    except Student.DoesNotExist:
        return True
    return student_field_value(student, scope.student_field_key) == scope.reference_id
