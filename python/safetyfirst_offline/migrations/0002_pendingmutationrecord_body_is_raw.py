from django.db import migrations, models


class Migration(migrations.Migration):

    dependencies = [
        ("safetyfirst_offline", "0001_initial"),
    ]

    operations = [
        migrations.AddField(
            model_name="pendingmutationrecord",
            name="body_is_raw",
            field=models.BooleanField(default=False),
        ),
    ]
