import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('members', '0001_initial'),
    ]

    operations = [
        migrations.CreateModel(
            name='Notification',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('message', models.TextField()),
                ('type', models.CharField(choices=[('low_lecture_count_per_subject', 'Low lecture count per subject'), ('lecture_added', 'Lecture added')], db_index=True, max_length=50)),
                ('subject', models.CharField(blank=True, max_length=100)),
                ('student_email', models.EmailField(blank=True, max_length=254)),
                ('details', models.JSONField(blank=True, default=dict)),
                ('read', models.BooleanField(default=False)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('user', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='notifications', to='members.volunteer')),
            ],
            options={
                'ordering': ['-created_at', '-id'],
                'indexes': [
                    models.Index(fields=['user', 'type', 'subject', 'student_email'], name='notif_user_type_subject_idx'),
                    models.Index(fields=['user', 'read'], name='notif_user_read_idx'),
                ],
                'constraints': [
                    models.UniqueConstraint(condition=models.Q(('type', 'low_lecture_count_per_subject')), fields=('user', 'subject', 'student_email'), name='unique_low_lecture_notification'),
                ],
            },
        ),
    ]
