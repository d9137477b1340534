import logging

from django.db import transaction
from django.db.models import Prefetch, ProtectedError
from django.utils.text import slugify

from .errors import AlreadyExists, Conflict, ValidationFailed
from .field_logic import validate_logic_rules
from .models import Category, CategoryField, FieldOption, Subcategory

logger = logging.getLogger(__name__)


def unique_slug(model, name, **scope):
    base = slugify(name) or 'item'
    slug = base
    n = 2
    while model.objects.filter(slug=slug, **scope).exists():
        slug = f"{base}-{n}"
        n += 1
    return slug


def active_hierarchy():
    """Active categories with their active subcategories, for pickers and the ticket form."""
    return Category.objects.filter(is_active=True).prefetch_related(
        Prefetch('subcategories', queryset=Subcategory.objects.filter(is_active=True))
    )


def category_schema(category):
    """Everything the ticket form needs for one category."""
    subcategories = category.subcategories.filter(is_active=True).prefetch_related(
        Prefetch(
            'fields',
            queryset=CategoryField.objects.filter(is_active=True).prefetch_related(
                Prefetch('options', queryset=FieldOption.objects.filter(is_active=True))
            ),
        )
    )
    return {
        'id': category.pk,
        'name': category.name,
        'slug': category.slug,
        'scope_mode': category.scope_mode,
        'sla_hours': category.sla_hours,
        'subcategories': [
            {
                'id': sub.pk,
                'name': sub.name,
                'slug': sub.slug,
                'description': sub.description,
                'fields': [
                    {
                        'id': f.pk,
                        'name': f.name,
                        'slug': f.slug,
                        'field_type': f.field_type,
                        'required': f.required,
                        'placeholder': f.placeholder,
                        'help_text': f.help_text,
                        'validation': f.validation or {},
                        'options': [{'label': o.label, 'value': o.value} for o in f.options.all()],
                    }
                    for f in sub.fields.all()
                ],
            }
            for sub in subcategories
        ],
    }


def check_field_rules(field):
    siblings = CategoryField.objects.filter(subcategory_id=field.subcategory_id, is_active=True)
    if field.pk:
        siblings = siblings.exclude(pk=field.pk)
    problems = validate_logic_rules(field.slug, field.validation, set(siblings.values_list('slug', flat=True)))
    if problems:
        raise ValidationFailed("Invalid field logic", {'errors': problems})


def save_field(field):
    """Validate conditional logic, then persist."""
    if not field.slug:
        field.slug = slugify(field.name).replace('-', '_')
    duplicate = CategoryField.objects.filter(subcategory_id=field.subcategory_id, slug=field.slug)
    if field.pk:
        duplicate = duplicate.exclude(pk=field.pk)
    if duplicate.exists():
        raise AlreadyExists(f"A field with slug '{field.slug}' already exists in this subcategory")
    check_field_rules(field)
    field.save()
    return field


@transaction.atomic
def replace_options(field, options):
    """Replace a field's options with ``options`` (list of {label, value}) in order."""
    field.options.all().delete()
    created = []
    for position, option in enumerate(options or []):
        label = (option.get('label') or option.get('value') or '').strip()
        value = (option.get('value') or label).strip()
        if not label:
            raise ValidationFailed(f"Option {position + 1} needs a label")
        created.append(FieldOption.objects.create(field=field, label=label, value=value, display_order=position))
    return created


def soft_delete(instance):
    instance.is_active = False
    instance.save(update_fields=['is_active'])
    logger.info("Deactivated %s %s", instance.__class__.__name__, instance.pk)


def delete_master(instance):
    """Hard delete master data, refusing when rows still reference it."""
    related = [
        rel for rel in instance._meta.related_objects
        if getattr(instance, rel.get_accessor_name()).exists()
    ] if instance.pk else []
    if related:
        names = ', '.join(sorted({rel.related_model._meta.verbose_name_plural for rel in related}))
        raise Conflict(f"{instance} is still used by {names}; deactivate it instead")
    try:
        instance.delete()
    except ProtectedError:
        raise Conflict(f"{instance} is still in use")
