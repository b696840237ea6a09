from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='ComplianceReport',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('week_start', models.DateTimeField(db_index=True)),
                ('week_end', models.DateTimeField()),
                ('members', models.JSONField(default=list)),
                ('total_users_processed', models.PositiveIntegerField(default=0)),
                ('members_with_low_lectures', models.PositiveIntegerField(default=0)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
            ],
            options={
                'ordering': ['-created_at', '-id'],
                'get_latest_by': 'created_at',
            },
        ),
    ]
