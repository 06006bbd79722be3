"""
Django management command to populate church and event data.
Loads the built-in Los Angeles sample parishes or a JSON file.
"""

import json
import os
from datetime import timedelta
from typing import Dict, List

from django.core.exceptions import ValidationError
from django.core.management.base import BaseCommand, CommandError
from django.db import transaction
from django.utils import timezone

from churches.exceptions import GeocodingError
from churches.models import Church, ChurchEvent, ChurchStatus, ClergyMember
from churches.services import GeocodingService, compose_address

CHURCH_FIELDS = [
    'name', 'description', 'street_address', 'city', 'state', 'zip_code', 'phone',
    'image_url', 'interior_image_url', 'members', 'services', 'service_schedule',
    'languages', 'has_english_service', 'has_parking', 'wheelchair_accessible',
    'has_school', 'donation_zelle', 'donation_website',
]


class Command(BaseCommand):
    help = 'Populate church and event data from the built-in sample set or a JSON file'

    def add_arguments(self, parser):
        """Add command line arguments."""
        parser.add_argument(
            '--source',
            type=str,
            choices=['json', 'sample'],
            default='sample',
            help='Data source type (json, or sample for demo data)'
        )

        parser.add_argument(
            '--file',
            type=str,
            help='Path to the data file (required for the json source)'
        )

        parser.add_argument(
            '--status',
            type=str,
            choices=ChurchStatus.values,
            default=ChurchStatus.APPROVED,
            help='Review status given to imported churches'
        )

        parser.add_argument(
            '--geocode',
            action='store_true',
            help='Geocode churches that were imported without coordinates'
        )

        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Show what would be imported without actually importing'
        )

        parser.add_argument(
            '--clear-existing',
            action='store_true',
            help='Clear all existing church and event data before import (use with caution!)'
        )

    def handle(self, *args, **options):
        """Main command handler."""
        if options['source'] == 'json' and not options['file']:
            raise CommandError("--file argument is required when using json source")

        if options['file'] and not os.path.exists(options['file']):
            raise CommandError(f"File not found: {options['file']}")

        if options['source'] == 'json':
            church_data = self._load_from_json(options['file'])
        else:
            church_data = self._generate_sample_data()

        if not church_data:
            self.stdout.write(self.style.WARNING("No church data found to import"))
            return

        self.stdout.write(f"Found {len(church_data)} church records to process")

        if options['dry_run']:
            if options['clear_existing']:
                self.stdout.write("DRY RUN: Would clear all existing church and event data")
            self._show_dry_run_preview(church_data)
            return

        if options['clear_existing']:
            self._clear_existing()

        geocoder = GeocodingService() if options['geocode'] else None
        created, updated, failed = 0, 0, []

        for index, record in enumerate(church_data, 1):
            try:
                with transaction.atomic():
                    was_created = self._import_church(record, options['status'], geocoder)
            except (GeocodingError, ValidationError, ValueError, KeyError) as e:
                failed.append({'index': index, 'name': record.get('name', 'N/A'), 'error': str(e)})
                continue
            if was_created:
                created += 1
            else:
                updated += 1

        self._display_import_results(created, updated, failed)

    def _clear_existing(self) -> None:
        event_count = ChurchEvent.objects.count()
        church_count = Church.objects.count()
        # Events protect their church, so they go first
        ChurchEvent.objects.all().delete()
        Church.objects.all().delete()
        self.stdout.write(
            self.style.WARNING(f"Cleared {church_count} churches and {event_count} events")
        )

    def _import_church(self, record: Dict, status: str, geocoder) -> bool:
        fields = {field: record[field] for field in CHURCH_FIELDS if field in record}
        church, created = Church.objects.get_or_create(
            name=record['name'],
            city=record['city'],
            defaults={**fields, 'status': status}
        )
        if not created:
            for field, value in fields.items():
                setattr(church, field, value)
            church.status = status

        church.is_verified = status == ChurchStatus.APPROVED

        coordinates = record.get('coordinates')
        if coordinates:
            church.set_coordinates(coordinates['lat'], coordinates['lng'])
        elif geocoder is not None and not church.has_coordinates:
            location = geocoder.geocode(compose_address(
                church.street_address, church.city, church.state, church.zip_code
            ))
            church.set_coordinates(location['lat'], location['lng'])
            self.stdout.write(f"  Geocoded {church.name}")

        church.save()

        for member in record.get('clergy', []):
            ClergyMember.objects.get_or_create(church=church, name=member['name'], defaults=member)

        now = timezone.now()
        for event in record.get('events', []):
            event = dict(event)
            days_from_now = event.pop('days_from_now', None)
            if days_from_now is not None:
                event['date'] = now + timedelta(days=days_from_now)
            ChurchEvent.objects.update_or_create(
                church=church,
                title=event.pop('title'),
                defaults=event
            )

        return created

    def _load_from_json(self, file_path: str) -> List[Dict]:
        """Load church data from JSON file."""
        try:
            with open(file_path, 'r', encoding='utf-8') as jsonfile:
                data = json.load(jsonfile)
        except json.JSONDecodeError as e:
            raise CommandError(f"Invalid JSON file: {str(e)}")
        except OSError as e:
            raise CommandError(f"Error reading JSON file: {str(e)}")

        # Handle different JSON structures
        if isinstance(data, list):
            return data
        if isinstance(data, dict):
            for key in ['churches', 'data', 'records', 'items']:
                if key in data and isinstance(data[key], list):
                    return data[key]

            # If it's a single church record, wrap it in a list
            if 'name' in data:
                return [data]

        raise CommandError("JSON file does not contain valid church data structure")

    def _generate_sample_data(self) -> List[Dict]:
        """Los Angeles sample parishes. Event dates are relative to today."""
        return [
            {
                'name': 'St. Mary Ethiopian Orthodox Tewahedo Church',
                'street_address': '5355 W 135th St',
                'city': 'Hawthorne',
                'state': 'CA',
                'zip_code': '90250',
                'phone': '(310) 675-0632',
                'description': 'A vibrant spiritual home for the Ethiopian community in Los Angeles, '
                               'hosting major holiday celebrations and weekly gatherings.',
                'members': 2000,
                'services': ['Sunday Service', 'Bible Study', 'Youth Programs', 'Baptism Services'],
                'service_schedule': [
                    {'day': 'Sunday', 'time': '4:00 AM - 11:00 AM', 'description': 'Divine Liturgy (Kidase)'},
                    {'day': 'Saturday', 'time': '5:00 PM - 7:00 PM', 'description': 'Vespers (Mahelet) & Bible Study'},
                    {'day': 'Friday', 'time': '6:00 PM - 8:00 PM', 'description': 'Youth Program (English & Amharic)'},
                ],
                'languages': ['Amharic', 'English', "Ge'ez"],
                'has_english_service': True,
                'has_parking': True,
                'wheelchair_accessible': True,
                'has_school': True,
                'donation_zelle': 'donate@stmaryla.org',
                'donation_website': 'http://www.stmaryla.org',
                'coordinates': {'lat': 33.9088, 'lng': -118.3712},
                'clergy': [
                    {'name': 'Melake Gennet Abba', 'role': 'Head Priest'},
                    {'name': 'Deacon Solomon', 'role': 'Youth Coordinator'},
                ],
                'events': [
                    {
                        'title': 'Meskel Celebration',
                        'type': 'Holiday',
                        'days_from_now': 21,
                        'location': '5355 W 135th St, Hawthorne, CA',
                        'description': 'Lighting of the Demera bonfire to commemorate the Finding of '
                                       'the True Cross, followed by prayer and hymns.',
                    },
                ],
            },
            {
                'name': 'Tekle Haimanot Ethiopian Orthodox Tewahedo Church',
                'street_address': '310 N Reno St',
                'city': 'Los Angeles',
                'state': 'CA',
                'zip_code': '90026',
                'phone': '(213) 385-0567',
                'description': 'Regular spiritual guidance, baptism and marriage services, with a '
                               'strong emphasis on teaching church history to the youth.',
                'members': 800,
                'services': ['Sunday Service', 'Bible Study', 'Wedding Ceremonies'],
                'service_schedule': [
                    {'day': 'Sunday', 'time': '5:00 AM - 10:30 AM', 'description': 'Divine Liturgy'},
                    {'day': 'Wednesday', 'time': '6:00 PM - 8:00 PM', 'description': 'Weekly Prayer & Teaching'},
                ],
                'languages': ['Amharic', "Ge'ez"],
                'wheelchair_accessible': True,
                'donation_zelle': 'giving@teklehaimanotla.org',
                'coordinates': {'lat': 34.0728, 'lng': -118.2754},
                'clergy': [
                    {'name': 'Abba Fikre', 'role': 'Priest'},
                ],
                'events': [
                    {
                        'title': 'Youth Gospel Night',
                        'type': 'Bible Study',
                        'days_from_now': 5,
                        'location': '310 N Reno St, Los Angeles, CA',
                        'description': 'Worship, teaching and fellowship for the youth, conducted '
                                       'primarily in English.',
                    },
                ],
            },
            {
                'name': 'Virgin Mary Ethiopian Orthodox Tewahedo Church',
                'street_address': '4544 S Compton Ave',
                'city': 'Los Angeles',
                'state': 'CA',
                'zip_code': '90011',
                'phone': '(323) 231-1555',
                'description': 'A warm, close-knit community engaged in local charity work.',
                'members': 1200,
                'services': ['Sunday Service', 'Community Events', 'Youth Programs'],
                'service_schedule': [
                    {'day': 'Sunday', 'time': '5:00 AM - 11:00 AM', 'description': 'Divine Liturgy'},
                    {'day': 'Saturday', 'time': '9:00 AM - 12:00 PM', 'description': 'Amharic School'},
                ],
                'languages': ['Amharic', 'English', "Ge'ez"],
                'has_english_service': True,
                'has_parking': True,
                'wheelchair_accessible': True,
                'has_school': True,
                'donation_zelle': 'donate@virginmaryla.com',
                'coordinates': {'lat': 34.0022, 'lng': -118.2483},
                'events': [
                    {
                        'title': 'Annual Parish Picnic',
                        'type': 'Community',
                        'days_from_now': 12,
                        'location': 'Kenneth Hahn Park, Los Angeles, CA',
                        'description': 'Games, food and community bonding for families and friends.',
                    },
                    {
                        'title': 'Charity Fundraiser Dinner',
                        'type': 'Fundraiser',
                        'days_from_now': 40,
                        'location': '4544 S Compton Ave, Los Angeles, CA',
                        'description': 'Supporting the back-to-school drive for local students.',
                    },
                ],
            },
            {
                'name': 'Debre Haile St. Gabriel Ethiopian Orthodox Church',
                'street_address': '3822 W 139th St',
                'city': 'Hawthorne',
                'state': 'CA',
                'zip_code': '90250',
                'phone': '(310) 978-8311',
                'description': 'A sanctuary of peace and prayer with an active Sebeka Gubae '
                               'and a renowned choir.',
                'members': 950,
                'services': ['Sunday Service', 'Bible Study', 'Baptism Services'],
                'service_schedule': [
                    {'day': 'Sunday', 'time': '4:30 AM - 11:00 AM', 'description': 'Divine Liturgy'},
                    {'day': 'Daily', 'time': '6:00 PM - 7:00 PM', 'description': 'Evening Prayer'},
                ],
                'languages': ['Amharic', "Ge'ez"],
                'has_parking': True,
                'coordinates': {'lat': 33.9076, 'lng': -118.3469},
                'events': [
                    {
                        'title': 'Midnight Praise (Kidan)',
                        'type': 'Worship',
                        'days_from_now': 2,
                        'location': '3822 W 139th St, Hawthorne, CA',
                        'description': 'Early morning praise and worship before the Divine Liturgy.',
                    },
                ],
            },
        ]

    def _show_dry_run_preview(self, church_data: List[Dict]) -> None:
        """Show preview of what would be imported in dry run mode."""
        self.stdout.write(self.style.SUCCESS("DRY RUN - Preview of church data to import:"))
        self.stdout.write("-" * 60)

        for i, church in enumerate(church_data[:5], 1):  # Show first 5 records
            self.stdout.write(f"{i}. {church.get('name', 'N/A')}")
            self.stdout.write(f"   Address: {church.get('street_address', 'N/A')}")
            self.stdout.write(f"   City: {church.get('city', 'N/A')}, {church.get('state', 'N/A')}")
            self.stdout.write(f"   Events: {len(church.get('events', []))}")
            self.stdout.write("")

        if len(church_data) > 5:
            self.stdout.write(f"... and {len(church_data) - 5} more records")

    def _display_import_results(self, created: int, updated: int, failed: List[Dict]) -> None:
        """Display import results."""
        self.stdout.write(self.style.SUCCESS(f"Imported {created + updated} churches"))

        if created > 0:
            self.stdout.write(f"  Created: {created} churches")
        if updated > 0:
            self.stdout.write(f"  Updated: {updated} churches")
        if failed:
            self.stdout.write(self.style.WARNING(f"  Failed: {len(failed)} churches"))

            for record in failed[:3]:  # Show first 3 failures
                self.stdout.write(f"    - Record {record['index']} ({record['name']}): {record['error']}")

            if len(failed) > 3:
                self.stdout.write(f"    ... and {len(failed) - 3} more failures")
